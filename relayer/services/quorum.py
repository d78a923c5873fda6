# relayer/services/quorum.py

from typing import Dict, List, Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from ..core.logging import LoggingMixin
from ..database.repositories import SignatureRepository
from ..types import EvmAddress, QuorumConfig, QuorumError, Transfer


def transfer_message(transfer: Transfer):
    """
    EIP-191 personal message every validator signs for a transfer.

    Covers the conservation fields, so a signature attests to what is
    credited, to whom and on which chain, not just to the transfer id.
    """
    return encode_defunct(text=(
        f"bridge-transfer:{transfer.transfer_id}"
        f":{transfer.direction.value}"
        f":{transfer.source_chain_id}->{transfer.dest_chain_id}"
        f":{transfer.destination.lower()}"
        f":{transfer.amount}"
    ))


def recover_signer(transfer: Transfer, signature: str) -> EvmAddress:
    return EvmAddress(Account.recover_message(transfer_message(transfer), signature=signature))


class ValidatorSigner:
    """One validator's signing credential."""

    def __init__(self, private_key: str):
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> EvmAddress:
        return EvmAddress(self._account.address)

    def sign(self, transfer: Transfer) -> str:
        signed = self._account.sign_message(transfer_message(transfer))
        signature = signed.signature.hex()
        return signature if signature.startswith("0x") else f"0x{signature}"


class SignatureCollector(LoggingMixin):
    """
    Gathers k-of-n validator signatures over a transfer.

    A signature only counts when it recovers to a configured validator;
    each validator counts once.
    """

    def __init__(self, config: QuorumConfig, signers: List[ValidatorSigner],
                 signatures: SignatureRepository):
        self.threshold = config.threshold
        self.validators = {v.lower() for v in config.validators}
        self.signers = signers
        self.signatures = signatures

    def collect(self, transfer: Transfer) -> int:
        """
        Request missing signatures and return the number of valid ones.

        Raises:
            QuorumError: fewer than `threshold` valid signatures
        """
        existing = self._valid_signatures(transfer)

        for signer in self.signers:
            if signer.address.lower() in existing:
                continue
            try:
                signature = signer.sign(transfer)
            except Exception as e:
                self.log_warning("Validator failed to sign",
                                 **self.transfer_context(transfer.transfer_id,
                                                         validator=signer.address,
                                                         error=str(e)))
                continue

            recovered = self._safe_recover(transfer, signature)
            if recovered is None or recovered.lower() not in self.validators:
                self.log_warning("Discarding signature from unknown validator",
                                 **self.transfer_context(transfer.transfer_id,
                                                         validator=recovered))
                continue

            if self.signatures.add(transfer.transfer_id, EvmAddress(recovered.lower()), signature):
                existing[recovered.lower()] = signature

        count = len(existing)
        if count < self.threshold:
            raise QuorumError(
                f"Transfer {transfer.transfer_id} has {count} of {self.threshold} required signatures"
            )

        self.log_info("Quorum reached",
                      **self.transfer_context(transfer.transfer_id, signatures=count))
        return count

    def has_quorum(self, transfer: Transfer) -> bool:
        return len(self._valid_signatures(transfer)) >= self.threshold

    def _valid_signatures(self, transfer: Transfer) -> Dict[str, str]:
        valid = {}
        for validator, signature in self.signatures.signatures_for(transfer.transfer_id).items():
            signer = self._safe_recover(transfer, signature)
            if signer and signer.lower() == validator.lower() and signer.lower() in self.validators:
                valid[signer.lower()] = signature
        return valid

    def _safe_recover(self, transfer: Transfer, signature: str) -> Optional[str]:
        try:
            return recover_signer(transfer, signature)
        except ValueError as e:
            self.log_warning("Stored signature does not recover",
                             **self.transfer_context(transfer.transfer_id, error=str(e)))
            return None
