"""
Trawler - discovers targets from hosting providers and dispatches a
pipeline job for each, at a controlled rate.
"""
__version__ = "0.1.0"
