"""Country guessing game over progressively revealed map layers."""

__version__ = "0.1.0"
