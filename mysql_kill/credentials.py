"""
Resolve passwords that are AWS Secrets Manager references.

Plain values pass straight through. References use the ECS form::

    arn:aws:secretsmanager:region:account-id:secret:name[:json-key[:version-stage[:version-id]]]
"""

import json

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import SecretResolutionFailed
from .util import debug

SECRETS_MANAGER_ARN_PREFIX = "arn:aws:secretsmanager:"

# arn : aws : secretsmanager : region : account-id : secret : secret-name
BASE_ARN_PARTS = 7


def is_secrets_manager_arn(value):
    return bool(value) and value.startswith(SECRETS_MANAGER_ARN_PREFIX)


def parse_secret_ref(value):
    """
    Split a reference into ``(arn, json_key, version_stage, version_id)``;
    missing trailing parts come back as empty strings.
    """
    parts = value.split(":")
    if len(parts) <= BASE_ARN_PARTS:
        return value, "", "", ""
    arn = ":".join(parts[:BASE_ARN_PARTS])
    extras = parts[BASE_ARN_PARTS:] + ["", "", ""]
    json_key, version_stage, version_id = extras[:3]
    return arn, json_key, version_stage, version_id


def region_of(arn):
    parts = arn.split(":")
    if len(parts) < 4 or not parts[3]:
        raise SecretResolutionFailed(
            "cannot extract region from ARN: {}".format(arn)
        )
    return parts[3]


def secrets_manager_client(arn):
    return boto3.client("secretsmanager", region_name=region_of(arn))


def resolve_secret_value(client, ref):
    arn, json_key, version_stage, version_id = parse_secret_ref(ref)
    kwargs = {"SecretId": arn}
    if version_stage:
        kwargs["VersionStage"] = version_stage
    if version_id:
        kwargs["VersionId"] = version_id
    debug("Fetching secret {} (json key {!r})".format(arn, json_key))
    try:
        out = client.get_secret_value(**kwargs)
    except (BotoCoreError, ClientError) as e:
        raise SecretResolutionFailed("get secret value: {}".format(e)) from e
    secret = out.get("SecretString")
    if secret is None:
        raise SecretResolutionFailed(
            "secret {!r} has no SecretString (binary secrets are not supported)".format(  # noqa
                arn
            )
        )
    if not json_key:
        return secret
    try:
        data = json.loads(secret)
    except ValueError as e:
        raise SecretResolutionFailed("parse secret JSON: {}".format(e)) from e
    if not isinstance(data, dict) or json_key not in data:
        raise SecretResolutionFailed(
            "key {!r} not found in secret JSON".format(json_key)
        )
    value = data[json_key]
    if not isinstance(value, str):
        raise SecretResolutionFailed(
            "key {!r} in secret JSON is not a string".format(json_key)
        )
    return value


def resolve_password(value, client_factory=secrets_manager_client):
    """
    Return ``value`` itself, or the secret it references.
    """
    if not is_secrets_manager_arn(value):
        return value
    arn, _, _, _ = parse_secret_ref(value)
    try:
        client = client_factory(arn)
    except (BotoCoreError, ClientError) as e:
        raise SecretResolutionFailed("load aws config: {}".format(e)) from e
    return resolve_secret_value(client, value)
