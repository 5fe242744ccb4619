"""kmsgate - custodial EVM transaction signing gateway backed by AWS KMS."""

__version__ = "0.1.0"
