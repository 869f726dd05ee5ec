"""AWS Lambda handler for the Fashion Studio API."""

from typing import Any

from loguru import logger
from mangum import Mangum

from .api import app

# Configure loguru for Lambda
logger.add(lambda msg: print(msg, end=""))  # Lambda logs to stdout

# Services are built on the first request and kept for the life of the container
handler = Mangum(app, lifespan="off")


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """AWS Lambda entry point.

    Args:
        event: Lambda event dictionary containing request information.
        context: Lambda context object with runtime information.

    Returns:
        Response dictionary with statusCode, headers, and body.
    """
    logger.info(
        "Lambda event: {} {}",
        event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method"),
        event.get("path") or event.get("rawPath"),
    )

    response = handler(event, context)

    logger.info("Lambda response status: {}", response.get("statusCode"))

    return response  # type: ignore[no-any-return]
