"""Geographic hierarchical authorization and attribution consistency for barangay records"""

__version__ = "0.1.0"
