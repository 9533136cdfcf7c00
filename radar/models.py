"""Records produced by the radar and the risk tag mapping."""
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

SEVERITIES = ("CRITICAL", "HIGH", "MEDIUM", "LOW", "INFO")
TAGS = ("SAFE", "MEDIUM", "HIGH", "CRITICAL")


def record_id(network: str, address: str) -> str:
    """Deterministic store key shared by contracts and wallets."""
    return f"{network}-{address}".lower()


def clamp_score(score: int) -> int:
    return max(0, min(100, int(score)))


def risk_tag(score: int) -> str:
    """
    Map a risk score to its tag.

    Args:
        score: Risk score, clamped to [0, 100] first

    Returns:
        CRITICAL, HIGH, MEDIUM or SAFE
    """
    score = clamp_score(score)
    if score >= 75:
        return "CRITICAL"
    if score >= 45:
        return "HIGH"
    if score >= 20:
        return "MEDIUM"
    return "SAFE"


def iso_timestamp(unix_ts: Optional[int] = None) -> str:
    if unix_ts is None:
        return datetime.now(timezone.utc).isoformat()
    return datetime.fromtimestamp(int(unix_ts), tz=timezone.utc).isoformat()


@dataclass
class Finding:
    type: str
    severity: str
    description: str
    evidence: Optional[str] = None

    def __post_init__(self) -> None:
        if self.severity not in SEVERITIES:
            raise ValueError(f"Unknown severity: {self.severity}")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.evidence is None:
            data.pop("evidence")
        return data


@dataclass
class NetworkCursor:
    network: str
    last_scanned_block: int


@dataclass
class ContractRecord:
    """Risk profile of one deployed contract."""
    address: str
    deployer: str
    network: str
    block_number: Optional[int] = None
    tx_hash: Optional[str] = None
    timestamp: str = field(default_factory=iso_timestamp)
    risk_score: int = 0
    tag: str = "SAFE"
    type: str = "Unknown"
    name: str = "Unknown Contract"
    symbol: str = "???"
    features: List[str] = field(default_factory=list)
    findings: List[Finding] = field(default_factory=list)
    has_liquidity: bool = False
    is_mintable: bool = False
    is_burnable: bool = False
    is_scam: bool = False
    is_vulnerable: bool = False
    bytecode_excerpt: str = ""
    bytecode_size: int = 0
    error: Optional[str] = None

    @property
    def id(self) -> str:
        return record_id(self.network, self.address)

    def add_feature(self, feature: str) -> None:
        if feature not in self.features:
            self.features.append(feature)

    def add_finding(self, type_: str, severity: str, description: str,
                    evidence: Optional[str] = None) -> None:
        self.findings.append(Finding(type_, severity, description, evidence))

    def finalize(self) -> None:
        """Clamp the score and derive tag / scam / vulnerable flags from it."""
        self.risk_score = clamp_score(self.risk_score)
        self.tag = risk_tag(self.risk_score)
        self.is_scam = self.tag == "CRITICAL"
        self.is_vulnerable = self.tag in ("HIGH", "CRITICAL")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["id"] = self.id
        data["findings"] = [f.to_dict() for f in self.findings]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContractRecord":
        data = dict(data)
        data.pop("id", None)
        data["findings"] = [Finding(**f) for f in data.get("findings", [])]
        return cls(**data)


@dataclass
class WalletRecord:
    """A wallet whose native balance crossed the USD threshold."""
    address: str
    network: str
    balance_native: float
    balance_usd: float
    last_seen: str = field(default_factory=iso_timestamp)
    is_multisig: bool = False
    tx_hash: Optional[str] = None

    @property
    def id(self) -> str:
        return record_id(self.network, self.address)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WalletRecord":
        data = dict(data)
        data.pop("id", None)
        return cls(**data)
