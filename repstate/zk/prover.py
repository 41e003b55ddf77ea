"""
ZK-SNARK Proof Generation
=========================

Prover interface and the snarkjs-backed implementation.

snarkjs runs as a subprocess in a worker thread so proving never blocks the
event loop. Circuit artifacts are looked up in the build directory as
``<circuit>.wasm``, ``<circuit>.zkey`` and ``<circuit>.vkey.json``.

Version: 0.1.0
"""

import asyncio
import json
import secrets
import shlex
import subprocess
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from repstate.errors import ProvingFailedError
from repstate.logging import get_logger
from repstate.zk.models import Circuit, ProofResult, PublicSignals, ZKProof

logger = get_logger(__name__)


class Prover(ABC):
    """
    Abstract prover.

    Implementations:
    - SnarkjsProver: Groth16 proofs via snarkjs
    - MockProver: evaluates circuit outputs in-process (development/tests)
    """

    max_concurrency: int = 1

    @abstractmethod
    async def prove(self, circuit: Circuit, inputs: dict[str, Any]) -> ProofResult:
        """
        Generate a proof.

        Args:
            circuit: Circuit to prove
            inputs: Circuit inputs with big integers as decimal strings

        Returns:
            ProofResult with proof and public signals

        Raises:
            ProvingFailedError: If the witness or proof cannot be generated
        """
        pass

    @abstractmethod
    async def verify(
        self,
        circuit: Circuit,
        public_signals: list[int],
        proof: ZKProof,
    ) -> bool:
        pass


class SnarkjsProver(Prover):
    """
    Groth16 prover backed by the snarkjs CLI.

    Usage:
        prover = SnarkjsProver(build_dir="zksnarkBuild")
        result = await prover.prove(Circuit.VERIFY_EPOCH_KEY, inputs)
    """

    def __init__(
        self,
        build_dir: str | Path | None = None,
        snarkjs_command: str | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        from repstate.config import settings

        self.build_dir = Path(build_dir) if build_dir else settings.prover.build_dir
        self.command = shlex.split(snarkjs_command or settings.prover.snarkjs_command)
        self.max_concurrency = max_concurrency or settings.prover.max_concurrency
        self._validate_setup()

    def _validate_setup(self) -> None:
        if not self.build_dir.exists():
            logger.warning(
                "zk_circuit_build_dir_not_found",
                path=str(self.build_dir),
            )

    def _artifact(self, circuit: Circuit, suffix: str) -> Path:
        return self.build_dir / f"{circuit.value}{suffix}"

    def _temp_path(self, circuit: Circuit, label: str, token: str) -> Path:
        return self.build_dir / f"{circuit.value}_{label}_{token}.json"

    async def _run(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        return await asyncio.to_thread(
            subprocess.run,
            [*self.command, *args],
            capture_output=True,
            text=True,
            cwd=self.build_dir.parent,
        )

    async def prove(self, circuit: Circuit, inputs: dict[str, Any]) -> ProofResult:
        wasm_path = self._artifact(circuit, ".wasm")
        zkey_path = self._artifact(circuit, ".zkey")

        if not wasm_path.exists():
            raise ProvingFailedError(
                f"Circuit WASM not found: {wasm_path}",
                context={"circuit": circuit.value},
            )
        if not zkey_path.exists():
            raise ProvingFailedError(
                f"Proving key not found: {zkey_path}",
                context={"circuit": circuit.value},
            )

        token = secrets.token_hex(4)
        input_file = self._temp_path(circuit, "input", token)
        proof_file = self._temp_path(circuit, "proof", token)
        public_file = self._temp_path(circuit, "public", token)

        with open(input_file, "w") as f:
            json.dump(inputs, f)

        try:
            start_time = time.time()

            result = await self._run(
                [
                    "groth16",
                    "fullprove",
                    str(input_file),
                    str(wasm_path),
                    str(zkey_path),
                    str(proof_file),
                    str(public_file),
                ]
            )

            proving_time_ms = int((time.time() - start_time) * 1000)

            if result.returncode != 0:
                logger.error(
                    "snarkjs_proof_generation_failed",
                    stderr=result.stderr,
                    circuit=circuit.value,
                )
                raise ProvingFailedError(
                    f"Proof generation failed: {result.stderr}",
                    context={"circuit": circuit.value, "returncode": result.returncode},
                )

            with open(proof_file) as f:
                proof_json = json.load(f)
            with open(public_file) as f:
                public_signals = json.load(f)

            logger.info(
                "zk_proof_generated",
                circuit=circuit.value,
                proving_time_ms=proving_time_ms,
            )

            return ProofResult(
                circuit=circuit,
                proof=ZKProof(**proof_json),
                public_signals=PublicSignals(signals=[str(s) for s in public_signals]),
                proving_time_ms=proving_time_ms,
            )

        finally:
            for temp_path in (input_file, proof_file, public_file):
                if temp_path.exists():
                    temp_path.unlink()

    async def verify(
        self,
        circuit: Circuit,
        public_signals: list[int],
        proof: ZKProof,
    ) -> bool:
        vkey_path = self._artifact(circuit, ".vkey.json")
        if not vkey_path.exists():
            logger.error("zk_verification_key_not_found", path=str(vkey_path))
            return False

        token = secrets.token_hex(4)
        proof_file = self._temp_path(circuit, "verify_proof", token)
        public_file = self._temp_path(circuit, "verify_public", token)

        try:
            with open(proof_file, "w") as f:
                json.dump(proof.model_dump(), f)
            with open(public_file, "w") as f:
                json.dump([str(s) for s in public_signals], f)

            start_time = time.time()
            result = await self._run(
                ["groth16", "verify", str(vkey_path), str(public_file), str(proof_file)]
            )
            verification_time_ms = int((time.time() - start_time) * 1000)

            is_valid = result.returncode == 0 and "OK" in result.stdout

            logger.info(
                "zk_proof_verified",
                circuit=circuit.value,
                valid=is_valid,
                verification_time_ms=verification_time_ms,
            )
            return is_valid

        finally:
            for temp_path in (proof_file, public_file):
                if temp_path.exists():
                    temp_path.unlink()


_prover: Prover | None = None


def get_prover() -> Prover:
    """
    Get the configured prover instance.

    Returns:
        Prover for settings.prover.mode
    """
    global _prover

    if _prover is None:
        from repstate.config import ProverMode, settings

        if settings.prover.mode == ProverMode.MOCK:
            from repstate.zk.mock import MockProver

            _prover = MockProver()
            logger.info("prover_created", mode="mock")
        elif settings.prover.mode == ProverMode.SNARKJS:
            _prover = SnarkjsProver()
            logger.info("prover_created", mode="snarkjs", build_dir=str(_prover.build_dir))
        else:
            raise ValueError(f"Unknown prover mode: {settings.prover.mode}")

    return _prover


def set_prover(prover: Prover | None) -> None:
    """Override the prover instance (used by tests)."""
    global _prover
    _prover = prover
