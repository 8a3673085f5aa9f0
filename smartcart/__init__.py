"""Camera product scanner and retail backend"""

__version__ = '0.1.0'
