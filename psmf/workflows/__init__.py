from .offline_mf import MFResult, ps_offline_mf, run_offline_mf

__all__ = ["MFResult", "ps_offline_mf", "run_offline_mf"]
