"""tfingest test suite.

- unit/: per-module tests using stub boto3 sessions and temporary files
- test_integration_s3_moto.py: S3 backend end to end against moto
"""
