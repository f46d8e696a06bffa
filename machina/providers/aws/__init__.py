from machina.providers.aws.adapter import AWSAdapter

__all__ = ["AWSAdapter"]
