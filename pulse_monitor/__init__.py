"""
Pulse Monitor — heartbeat detection from a photoresistor (LDR) pressed
against a fingertip.  The drifting optical signal is smoothed, compared
against an adaptive threshold and turned into beat events, a BPM estimate
and beat-synchronised LED / buzzer feedback.
"""

__version__ = "0.1.0"
__author__ = "pulse_monitor"
