"""
stockcast: return analytics and short-horizon recurrent forecasts for a
single daily price series.
"""

__version__ = "0.1.0"
