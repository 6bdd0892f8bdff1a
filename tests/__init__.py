"""Test suite for the model sync worker.

This package contains tests for the worker including:
- Unit tests for individual modules
- Integration tests against moto-mocked S3 and SQS
"""
