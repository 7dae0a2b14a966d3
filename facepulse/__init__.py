"""
facepulse — contactless heart-rate estimation from face video (rPPG).
A face is tracked across frames, the mean green intensity of the skin
(face minus eyes) is sampled per frame, and the dominant frequency of the
filtered signal gives the heart rate in BPM.
"""

__version__ = "0.1.0"
__author__ = "facepulse"
