"""
Tests for configuration loading and the command-line interface
"""

import json
from datetime import datetime

import pytest
import numpy as np
import nibabel as nib

from fibertrack.cli import main, read_target_names
from fibertrack.config import DEFAULT_TRACKING_CONFIG, load_tracking_config
from fibertrack.io.files import StreamlineFileSource
from fibertrack.io.labels import StreamlineLabelList
from fibertrack.utils.logger import TrackingRunRecord, record_tracking_run


class TestConfig:
    """Test tracking configuration files"""

    def test_defaults(self):
        config = load_tracking_config()
        assert config == DEFAULT_TRACKING_CONFIG
        config['max_steps'] = 1
        assert DEFAULT_TRACKING_CONFIG['max_steps'] == 2000

    def test_overrides(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({'step_length': 1.0, 'loopcheck': True}))

        config = load_tracking_config(path)

        assert config['step_length'] == 1.0
        assert config['loopcheck'] is True
        assert config['max_steps'] == 2000

    def test_unknown_keys(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({'step_size': 1.0}))

        with pytest.raises(ValueError, match="step_size"):
            load_tracking_config(path)

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2, 3]")

        with pytest.raises(ValueError):
            load_tracking_config(path)


class TestCLI:
    """Test the fibertrack command"""

    @pytest.fixture
    def workspace(self, tmp_path, monkeypatch):
        """Peak image pointing along x, two seeds and a target region"""
        monkeypatch.chdir(tmp_path)

        peaks = np.zeros((10, 10, 10, 3), dtype=np.float32)
        peaks[..., 0] = 1.0
        nib.save(nib.Nifti1Image(peaks, np.eye(4)), "peaks.nii.gz")

        targets = np.zeros((10, 10, 10), dtype=np.int16)
        targets[8, 5, 5] = 2
        nib.save(nib.Nifti1Image(targets, np.eye(4)), "targets.nii.gz")

        # 1-based voxel coordinates
        (tmp_path / "seeds.txt").write_text("6 6 6\n6 3 6\n")
        (tmp_path / "names.txt").write_text("# label name\n2 corpus callosum\n")
        return tmp_path

    def track(self, *extra):
        main([
            'track', '--model', 'peaks', '--peaks', 'peaks.nii.gz',
            '--seeds', 'seeds.txt', '--step-length', '1.0', *extra
        ])

    def test_track_writes_streamlines(self, workspace, capsys):
        self.track('--output', 'tracts')

        assert capsys.readouterr().out.strip().splitlines()[-1] == "2"
        source = StreamlineFileSource("tracts")
        assert source.n_streamlines == 2
        streamline = source.get()
        source.done()
        assert len(streamline) == 10
        np.testing.assert_allclose(streamline.points[streamline.seed], [5.0, 5.0, 5.0], atol=1e-5)
        assert not (workspace / "tracts.trkl").exists()

    def test_track_with_targets(self, workspace, capsys):
        """Only the streamline through the target is kept, with its label"""
        self.track(
            '--output', 'tracts', '--targets', 'targets.nii.gz',
            '--target-names', 'names.txt', '--min-target-hits', '1'
        )

        assert capsys.readouterr().out.strip().splitlines()[-1] == "1"
        labels = StreamlineLabelList.read(workspace / "tracts.trkl")
        assert labels.labels == [{2}]
        assert labels.dictionary == {2: "corpus callosum"}

    def test_track_writes_map_and_median(self, workspace):
        self.track('--map', 'density.nii.gz', '--median', 'median', '--format', 'tck',
                   '--output', 'tracts')

        density = np.asanyarray(nib.load(str(workspace / "density.nii.gz")).dataobj)
        assert density.sum() == 20
        assert (workspace / "median.trk").exists()
        assert (workspace / "tracts.tck").exists()

    def test_track_records_run(self, workspace):
        self.track('--output', 'tracts', '--targets', 'targets.nii.gz', '--min-target-hits', '1')

        log = (workspace / "logs" / "tracking_runs.md").read_text()
        assert "**Seeds**: 2 from seeds.txt" in log
        assert "**Streamlines**: 1 retained of 2 generated" in log
        assert "- streamlines: tracts.trk" in log
        assert "- step_length = 1.0" in log

    def test_track_block_size(self, workspace, capsys):
        self.track('--output', 'tracts', '--block-size', '1')

        assert capsys.readouterr().out.strip().splitlines()[-1] == "2"

    def test_track_config_file(self, workspace, capsys):
        (workspace / "config.json").write_text(json.dumps({'max_steps': 2}))

        self.track('--output', 'tracts', '--config', 'config.json')

        source = StreamlineFileSource("tracts")
        assert len(source.get()) == 5
        source.done()

    def test_track_requires_peaks(self, workspace):
        with pytest.raises(SystemExit) as exc_info:
            main(['track', '--model', 'peaks', '--seeds', 'seeds.txt'])
        assert exc_info.value.code == 1

    def test_track_requires_seeds(self, workspace):
        with pytest.raises(SystemExit) as exc_info:
            main(['track', '--model', 'peaks', '--peaks', 'peaks.nii.gz'])
        assert exc_info.value.code == 1

    def test_info(self, workspace, capsys):
        self.track('--output', 'tracts', '--targets', 'targets.nii.gz')
        capsys.readouterr()

        main(['info', 'tracts'])

        out = capsys.readouterr().out
        assert "Streamlines:   2" in out
        assert "Dimensions:    10 x 10 x 10" in out
        assert "Label entries: 2" in out

    def test_median_command(self, workspace):
        self.track('--output', 'tracts')

        main(['median', 'tracts', '--output', 'middle'])

        source = StreamlineFileSource("middle")
        assert source.n_streamlines == 1
        median = source.get()
        source.done()
        np.testing.assert_allclose(median.points[:, 0], np.arange(10), atol=1e-5)

    def test_median_of_mrtrix_file(self, workspace):
        """An MRtrix file carries no grid, so the output space comes from an image"""
        self.track('--output', 'tracts', '--format', 'tck')

        main(['median', 'tracts', '--output', 'middle', '--reference', 'targets.nii.gz'])

        source = StreamlineFileSource("middle")
        assert source.n_streamlines == 1
        median = source.get()
        source.done()
        np.testing.assert_allclose(median.points[:, 0], np.arange(10), atol=1e-4)

    def test_median_of_mrtrix_file_needs_reference(self, workspace):
        self.track('--output', 'tracts', '--format', 'tck')

        with pytest.raises(SystemExit) as exc_info:
            main(['median', 'tracts', '--output', 'middle'])
        assert exc_info.value.code == 1
        assert not (workspace / "middle.trk").exists()

    def test_no_command(self, workspace):
        with pytest.raises(SystemExit):
            main([])

    def test_read_target_names(self, tmp_path):
        path = tmp_path / "names.txt"
        path.write_text("1 left thalamus\n\n# comment\n7 cortex\n")

        assert read_target_names(str(path)) == {1: "left thalamus", 7: "cortex"}


class TestRunRecord:
    """Test the markdown record of tracking runs"""

    def test_entries_appended(self, tmp_path):
        record = TrackingRunRecord(
            model='peaks',
            seeds='wm.nii.gz',
            n_seeds=40,
            n_generated=80,
            n_retained=12,
            outputs={'streamlines': 'tracts.trk', 'visitation map': 'density.nii.gz'},
            tracker_config={'max_steps': 2000, 'loopcheck': True},
            started=datetime(2024, 3, 1, 9, 30, 0)
        )
        path = tmp_path / "runs" / "tracking_runs.md"

        assert record_tracking_run(record, path) == path
        record_tracking_run(record, path)

        text = path.read_text()
        assert text.count("### [TRACK-20240301093000] peaks model") == 2
        assert "**Streamlines**: 12 retained of 80 generated" in text
        assert "- visitation map: density.nii.gz" in text
        assert "- loopcheck = True" in text

    def test_no_outputs(self):
        record = TrackingRunRecord('bedpost', 'seeds.txt', 1, 1, 0)

        assert "- none" in record.to_markdown()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
