"""codeplan - plan, contextualize and execute coding tasks against an LLM."""

__version__ = "0.1.0"
