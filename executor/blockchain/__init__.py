from executor.blockchain.xchain_client import XchainClient

__all__ = ["XchainClient"]
