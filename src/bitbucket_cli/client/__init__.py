"""HTTP client for the Bitbucket Cloud REST API.

:class:`BitbucketClient` wraps :class:`httpx.Client` with credential
injection, transparent OAuth refresh and status-code to exception mapping.
It only ever sees a credential's ``auth_header()``; where the credential is
stored is the business of :class:`~bitbucket_cli.auth.manager.AuthManager`.

Example::

    from bitbucket_cli.client import BitbucketClient

    with BitbucketClient.from_manager(manager) as client:
        user = client.current_user()
"""

from bitbucket_cli.client.sync_client import API_BASE_URL, BitbucketClient

__all__ = ["API_BASE_URL", "BitbucketClient"]
