"""Telephony module - Asterisk ARI control plane."""

from webphone.telephony.ari_client import AriClient, AriConfig, create_ari_client

__all__ = ["AriClient", "AriConfig", "create_ari_client"]
