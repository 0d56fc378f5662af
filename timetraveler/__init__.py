"""
Git Time Traveler: backdated commits for your GitHub contribution graph
"""

__version__ = "1.1.2"
