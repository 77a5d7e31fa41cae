from farmescrow.multisig.provisioner import MultiSigProvisioner

__all__ = ["MultiSigProvisioner"]
