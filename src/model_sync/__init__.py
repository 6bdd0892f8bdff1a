"""Model sync worker.

Keeps a local directory of model files in step with an S3 bucket, driven by
S3 change notifications delivered through SQS, and tells application pods
about every replaced file.
"""

__version__ = "1.0.0"
