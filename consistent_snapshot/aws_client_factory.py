"""
AWS Client Factory Module
Provides boto3 client creation for the snapshot tool.

Credentials come from a .env file when one defines them, otherwise from
boto3's default chain (usually the instance profile).
"""

import logging
import os
from pathlib import Path
from typing import Optional

import boto3
from botocore.config import Config
from dotenv import load_dotenv

from consistent_snapshot import config


def _resolve_env_path(env_path: Optional[str] = None) -> str:
    """
    Determine which .env file should be used for AWS credentials.

    Priority order:
      1. Explicit parameter
      2. AWS_ENV_FILE environment variable
      3. ~/.env
    """
    if env_path:
        return env_path
    aws_env_file = os.environ.get("AWS_ENV_FILE")
    if aws_env_file:
        return aws_env_file
    return str(Path.home() / ".env")


def load_credentials_from_env(env_path: Optional[str] = None) -> Optional[tuple[str, str]]:
    """
    Load AWS credentials from a .env file if it provides them.

    Args:
        env_path: Optional override path (defaults to ~/.env)

    Returns:
        tuple: (aws_access_key_id, aws_secret_access_key), or None when the file
        does not define credentials and boto3's default chain should be used
    """
    resolved_path = _resolve_env_path(env_path)
    load_dotenv(resolved_path)

    aws_access_key_id = os.getenv("AWS_ACCESS_KEY_ID")
    aws_secret_access_key = os.getenv("AWS_SECRET_ACCESS_KEY")
    if aws_access_key_id and aws_secret_access_key:
        logging.debug("AWS credentials loaded from %s", resolved_path)
        return aws_access_key_id, aws_secret_access_key

    logging.debug("No AWS credentials in %s, using the default credential chain", resolved_path)
    return None


def build_client_config(max_attempts: int = config.API_MAX_ATTEMPTS) -> Config:
    """Bounded exponential-backoff retries for API calls made inside the freeze window."""
    return Config(retries={"max_attempts": max_attempts, "mode": "standard"})


def create_client(
    service_name: str,
    region: Optional[str] = None,
    max_attempts: int = config.API_MAX_ATTEMPTS,
):
    """
    Create a boto3 client for an AWS service.

    Args:
        service_name: AWS service name (e.g., 'ec2')
        region: AWS region name
        max_attempts: Total attempts per API call, including the first

    Returns:
        boto3.client: Configured AWS service client
    """
    client_kwargs = {"config": build_client_config(max_attempts)}

    credentials = load_credentials_from_env()
    if credentials is not None:
        client_kwargs["aws_access_key_id"], client_kwargs["aws_secret_access_key"] = credentials
        session_token = os.getenv("AWS_SESSION_TOKEN")
        if session_token:
            client_kwargs["aws_session_token"] = session_token

    if region is not None:
        client_kwargs["region_name"] = region

    return boto3.client(service_name, **client_kwargs)


def create_ec2_client(region: str, max_attempts: int = config.API_MAX_ATTEMPTS):
    """Create an EC2 boto3 client."""
    return create_client("ec2", region, max_attempts)
