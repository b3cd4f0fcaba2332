import time

import shortuuid


def generate_short_token(length: int = 8) -> str:
    return shortuuid.ShortUUID().random(length=length)


def generate_payment_reference() -> str:
    return f"REF_{int(time.time() * 1000)}_{generate_short_token()}"
