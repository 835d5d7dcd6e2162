"""iamrecon — declarative IAM resource reconciler."""

__version__ = "0.3.0"
