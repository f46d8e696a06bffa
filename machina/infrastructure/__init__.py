"""Infrastructure layer: persistence, vault, Terraform wrapper, locking and logging."""
