import os
import yaml
import logging
from pathlib import Path
from typing import Any, Optional
from pydantic import BaseModel, Field
from invoice_engine.modules.config_models import BusinessRulesConfig

logger = logging.getLogger(__name__)


class EngineConfig(BaseModel):
    root_dir: Path

    # Fields derived from root_dir, calculated during initialization
    config_dir: Path = Field(default=None)
    data_dir: Path = Field(default=None)
    log_dir: Path = Field(default=None)
    business_rules_path: Path = Field(default=None)

    _business_rules: Optional[BusinessRulesConfig] = None

    class Config:
        arbitrary_types_allowed = True

    def model_post_init(self, __context: Any) -> None:
        """Initialize dependent paths after root_dir is set."""
        if not self.config_dir: self.config_dir = self.root_dir / "config"
        if not self.data_dir: self.data_dir = self.root_dir / "data"
        if not self.log_dir: self.log_dir = self.root_dir / "logs"
        if not self.business_rules_path: self.business_rules_path = self.config_dir / "business_rules.yaml"

    @property
    def business_rules(self) -> BusinessRulesConfig:
        if self._business_rules is None:
            if not self.business_rules_path.exists():
                logger.warning(f"{self.business_rules_path} not found, using built-in business rules")
                self._business_rules = BusinessRulesConfig()
            else:
                with open(self.business_rules_path, 'r') as f:
                    raw = yaml.safe_load(f) or {}
                self._business_rules = BusinessRulesConfig(**raw)
        return self._business_rules

    @classmethod
    def load_default(cls) -> 'EngineConfig':
        package_dir = Path(__file__).parent
        root_dir = package_dir.parent
        return cls(root_dir=root_dir)


def setup_logging(config: EngineConfig, level=logging.INFO):
    os.makedirs(config.log_dir, exist_ok=True)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(config.log_dir / 'invoice_engine.log'),
            logging.StreamHandler()
        ]
    )

# Singleton instance
config = EngineConfig.load_default()
