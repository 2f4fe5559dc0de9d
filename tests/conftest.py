import pytest

from config import SimulationConfig


@pytest.fixture
def make_config(tmp_path):
    """Small CPU-only config factory; telemetry goes to tmp_path."""
    def _make(**overrides):
        params = dict(
            n_particles=16,
            n_steps=3,
            dt=0.1,
            sample_freq=1,
            work_group_size=4,
            num_workers=2,
            device="cpu",
            output_file=str(tmp_path / "telemetry.txt"),
        )
        params.update(overrides)
        return SimulationConfig(**params)
    return _make
