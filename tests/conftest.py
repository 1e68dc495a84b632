from os import (
    environ,
)

# Handler modules read their configuration at import time
environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
environ.setdefault("DB_HOST", "spacefinder.cluster-xxxxxxxx.us-east-1.rds.amazonaws.com")
environ.setdefault("DB_NAME", "spacefinder")
environ.setdefault(
    "DB_SECRET_ARN",
    "arn:aws:secretsmanager:us-east-1:012356789012:secret:SpaceFinder-Aurora-Secret",
)
environ.setdefault("LOG_LEVEL", "DEBUG")
environ.setdefault("TABLE_NAME", "spaces")
