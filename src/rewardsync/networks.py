# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Network registry.

Known chains with their explorer links, and the token contract bound on
each. A chain with no bound contract counts as "contract unknown" and
rewards for it are queued rather than attempted.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from .collaborators import TokenContract

logger = logging.getLogger(__name__)


class NetworkConfig(BaseModel):
    """Static description of a supported chain."""

    chain_id: int = Field(ge=1)
    name: str
    rpc_url: Optional[str] = None
    explorer_url: str
    contract_address: Optional[str] = None
    native_symbol: str = "ETH"


DEFAULT_NETWORKS: tuple[NetworkConfig, ...] = (
    NetworkConfig(chain_id=1, name="Ethereum Mainnet", explorer_url="https://etherscan.io"),
    NetworkConfig(chain_id=11155111, name="Sepolia Testnet", explorer_url="https://sepolia.etherscan.io"),
    NetworkConfig(chain_id=137, name="Polygon", explorer_url="https://polygonscan.com", native_symbol="MATIC"),
    NetworkConfig(chain_id=80001, name="Mumbai Testnet", explorer_url="https://mumbai.polygonscan.com", native_symbol="MATIC"),
    NetworkConfig(chain_id=1337, name="Hardhat Local", rpc_url="http://127.0.0.1:8545", explorer_url="http://localhost:8545"),
)


class NetworkRegistry:
    """Supported networks plus the contract bound on each of them."""

    def __init__(self, networks: Optional[Iterable[NetworkConfig]] = None) -> None:
        self._networks: dict[int, NetworkConfig] = {
            n.chain_id: n for n in (DEFAULT_NETWORKS if networks is None else networks)
        }
        self._contracts: dict[int, TokenContract] = {}

    def get(self, chain_id: int) -> Optional[NetworkConfig]:
        return self._networks.get(chain_id)

    def is_supported(self, chain_id: int) -> bool:
        return chain_id in self._networks

    def networks(self) -> list[NetworkConfig]:
        return sorted(self._networks.values(), key=lambda n: n.chain_id)

    def bind(self, chain_id: int, contract: TokenContract) -> None:
        """Bind the reward token contract for *chain_id*.

        Raises:
            ValueError: If the chain is not a supported network.
        """
        if chain_id not in self._networks:
            raise ValueError(
                f"Unsupported network {chain_id}. Supported: {sorted(self._networks)}"
            )
        self._contracts[chain_id] = contract
        logger.info("Bound reward contract on %s (%d)", self._networks[chain_id].name, chain_id)

    def unbind(self, chain_id: int) -> None:
        self._contracts.pop(chain_id, None)

    def contract_for(self, chain_id: int) -> Optional[TokenContract]:
        return self._contracts.get(chain_id)

    def explorer_url(self, chain_id: int, tx_hash: str) -> Optional[str]:
        network = self._networks.get(chain_id)
        if network is None:
            return None
        return f"{network.explorer_url}/tx/{tx_hash}"

    def address_explorer_url(self, chain_id: int, address: str) -> Optional[str]:
        network = self._networks.get(chain_id)
        if network is None:
            return None
        return f"{network.explorer_url}/address/{address}"
