from skyhotel.models.corporate import CorporateAgreement, pool_account_agreements
from skyhotel.models.user import AgentChannelQuota, AgentCorporateGrant, QuotaLedgerEntry, SystemUser
from skyhotel.models.pool import PoolAccount
from skyhotel.models.order import OrderGroup, OrderSplitItem
from skyhotel.models.system import SystemConfig
from skyhotel.models.monitor import PriceMonitorTask
from skyhotel.models.blacklist import HotelBlacklistRecord

__all__ = [
    "AgentChannelQuota",
    "AgentCorporateGrant",
    "CorporateAgreement",
    "HotelBlacklistRecord",
    "OrderGroup",
    "OrderSplitItem",
    "PoolAccount",
    "PriceMonitorTask",
    "QuotaLedgerEntry",
    "SystemConfig",
    "SystemUser",
    "pool_account_agreements",
]
