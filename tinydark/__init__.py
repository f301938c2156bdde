"""CPU building blocks on NumPy: activations, array helpers, box geometry with NMS, and basic layers."""

__version__ = "0.1.0"