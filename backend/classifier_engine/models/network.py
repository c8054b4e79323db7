"""
Shallow feed-forward classifier network.

Input width F -> one or two ReLU hidden layers -> output layer. A single
output unit is read through a sigmoid (one-class models), K output units
through a softmax.
"""

import io
from dataclasses import asdict, dataclass, field
from typing import List

import numpy as np
import torch
import torch.nn as nn

from shared.errors import ArtifactLoadFailed

ARTIFACT_FORMAT_VERSION = 1


@dataclass
class NetworkConfig:
    """Shape of a classifier network."""

    input_size: int
    output_size: int
    hidden_sizes: List[int] = field(default_factory=lambda: [16, 8])

    def __post_init__(self):
        self.hidden_sizes = [int(h) for h in self.hidden_sizes]
        if self.input_size <= 0:
            raise ValueError(f"Input size must be positive: {self.input_size}")
        if self.output_size <= 0:
            raise ValueError(f"Output size must be positive: {self.output_size}")
        if not 1 <= len(self.hidden_sizes) <= 2 or min(self.hidden_sizes) <= 0:
            raise ValueError(f"Expected 1 or 2 positive hidden widths: {self.hidden_sizes}")

    @property
    def is_binary(self) -> bool:
        return self.output_size == 1


class FeedForwardClassifier(nn.Module):
    """
    Dense classifier for small hand-curated datasets.

    Architecture:
        - Input Layer (input_size features)
        - 1-2 Hidden Layers (ReLU activation)
        - Output Layer (output_size logits)
    """

    def __init__(self, config: NetworkConfig):
        super().__init__()
        self.config = config

        layers = []
        width = config.input_size
        for hidden in config.hidden_sizes:
            layers.append(nn.Linear(width, hidden))
            layers.append(nn.ReLU())
            width = hidden
        layers.append(nn.Linear(width, config.output_size))

        self.model = nn.Sequential(*layers)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Forward pass of the network.

        Args:
            x: Input tensor of shape (batch_size, input_size)

        Returns:
            Logits of shape (batch_size, output_size)
        """
        return self.model(x)

    def predict_proba(self, features: np.ndarray) -> np.ndarray:
        """
        Class probabilities for a batch of feature vectors.

        Returns:
            Array (batch_size, output_size): sigmoid for one output, softmax otherwise
        """
        self.eval()
        with torch.no_grad():
            logits = self.forward(torch.as_tensor(np.asarray(features), dtype=torch.float32))
            if self.config.is_binary:
                probs = torch.sigmoid(logits)
            else:
                probs = torch.softmax(logits, dim=1)
        return probs.cpu().numpy().astype(np.float64)


def network_to_bytes(network: FeedForwardClassifier) -> bytes:
    """Serialize network shape and weights into an artifact blob."""
    buffer = io.BytesIO()
    torch.save(
        {
            "format_version": ARTIFACT_FORMAT_VERSION,
            "config": asdict(network.config),
            "state_dict": network.state_dict(),
        },
        buffer,
    )
    return buffer.getvalue()


def network_from_bytes(blob: bytes) -> FeedForwardClassifier:
    """
    Rebuild a network from an artifact blob.

    Raises:
        ArtifactLoadFailed: Blob is corrupt or not a classifier artifact
    """
    try:
        checkpoint = torch.load(io.BytesIO(blob), map_location="cpu", weights_only=True)
        config = NetworkConfig(**checkpoint["config"])
        network = FeedForwardClassifier(config)
        network.load_state_dict(checkpoint["state_dict"])
    except Exception as e:
        # torch.load surfaces unpickling errors with several unrelated types
        raise ArtifactLoadFailed(f"{type(e).__name__}: {e}") from e

    network.eval()
    return network
