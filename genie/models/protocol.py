"""Protocol for step-wise decoder models."""

from typing import Optional, Protocol


class Model(Protocol):
    """Protocol for decoders driven one timestep at a time.

    The caller owns the loop over timesteps and the state returned by each
    step; the model owns only its parameters.
    """

    def init(self) -> None:
        """Acquire parameters. Must be called before forward."""
        ...

    def forward(
        self,
        previous_key: Optional[int],
        time_delta: float,
        button: int,
        state=None,
    ):
        """
        Forward pass for a single timestep.

        Args:
            previous_key: key played at the previous step, or None/-1
            time_delta: seconds since the previous step
            button: index of the button pressed at this step
            state: state returned by the previous call, or None for zeros

        Returns:
            StepOutput with logits over keys and the new state
        """
        ...

    def dispose(self) -> None:
        """Release every buffer the model owns."""
        ...
