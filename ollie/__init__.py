"""
Ollie - pull and manage models on an Ollama-compatible inference server
"""

__version__ = "0.1.0"
__license__ = "MIT"

from ollie.config import Settings

__all__ = ["Settings", "__version__"]
