# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

from pydantic import BaseModel


class Identity(BaseModel):
    """The authenticated principal issuing a request.

    Attributes:
        sub: Stable subject identifier of the user.
        email: Contact address, when the identity provider returns one.
    """

    sub: str
    email: str | None = None
