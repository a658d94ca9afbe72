"""Release and deployment orchestration for continuous delivery pipelines."""

__version__ = "0.1.0"
