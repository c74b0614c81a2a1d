"""
Visual Clutter: real-time frame acquisition, YOLO inference and tensor decoding.
"""
__version__ = "0.1.0"
