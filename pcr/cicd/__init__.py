from pcr.cicd.upgrade import UpgradeDriver

__all__ = ["UpgradeDriver"]
