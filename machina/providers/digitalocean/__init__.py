from machina.providers.digitalocean.adapter import DigitalOceanAdapter

__all__ = ["DigitalOceanAdapter"]
