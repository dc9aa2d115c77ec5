"""agentspec: staged LLM generation of application specifications."""

__version__ = "0.1.0"
__all__ = ["__version__"]
