"""Update checking, signed release lists, verified downloading and MSI installation for a VPN client."""

__version__ = "0.1.0"