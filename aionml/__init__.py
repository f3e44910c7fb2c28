"""Self-contained machine-learning toolkit: dense networks, a minimal tensor
interpreter, training, quantization, device scheduling, a model catalogue and
keyword intent classification."""

__version__ = "0.1.0"