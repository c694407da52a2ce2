import uuid

import shortuuid


def generate_shortuuid() -> str:
    return shortuuid.uuid()


def generate_correlation_id() -> str:
    return str(uuid.uuid4())
