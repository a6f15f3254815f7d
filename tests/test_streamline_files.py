"""
Unit tests for streamline files: TrackVis, MRtrix, label lists and the file facade
"""

import io

import pytest
import numpy as np
import nibabel as nib

from fibertrack.core.grid import Grid
from fibertrack.core.space import ImageSpace, PointType
from fibertrack.io.adapters import AdapterState
from fibertrack.io.binary_stream import BinaryOutputStream, BinaryStreamError
from fibertrack.io.errors import DataError, HeaderError, StreamlineFileError
from fibertrack.io.files import (
    StreamlineFileSink,
    StreamlineFileSource,
    StreamlineFormat,
    file_stem,
    label_path,
    open_source_adapter,
    resolve_source_path,
)
from fibertrack.io.labels import StreamlineLabelList
from fibertrack.io.mrtrix import MrtrixSourceAdapter
from fibertrack.io.trackvis import TrackvisSourceAdapter, write_header
from fibertrack.tractography.data_source import DataManipulator
from fibertrack.tractography.pipeline import Pipeline
from fibertrack.tractography.streamline import Streamline


@pytest.fixture
def space():
    transform = np.diag([2.0, 2.0, 2.0, 1.0])
    transform[:3, 3] = [-20.0, -18.0, -10.0]
    return ImageSpace((20, 20, 20), (2.0, 2.0, 2.0), transform)


@pytest.fixture
def streamlines():
    """Two streamlines with the same per-point and per-streamline properties"""
    first = Streamline(
        [[1.0, 2.0, 3.0], [2.0, 2.0, 3.0], [3.0, 2.5, 3.0]],
        seed=1,
        labels={1, 5},
        point_properties={'fa': [0.1, 0.2, 0.3]},
        properties={'target_hits': 2.0}
    )
    second = Streamline(
        [[10.0, 10.0, 10.0], [10.0, 11.0, 10.25]],
        seed=0,
        labels={7},
        point_properties={'fa': [0.5, 0.6]},
        properties={'target_hits': 1.0}
    )
    return [first, second]


def write_bundle(stem, space, streamlines, **kwargs):
    sink = StreamlineFileSink(stem, space, **kwargs)
    sink.setup(len(streamlines), streamlines)
    for streamline in streamlines:
        sink.put(streamline)
    sink.finish()
    sink.done()
    return sink


def read_bundle(stem, **kwargs):
    source = StreamlineFileSource(stem, **kwargs)
    result = []
    while source.more():
        result.append(source.get())
    source.done()
    return result


class TestTrackvis:
    """Test .trk reading and writing"""

    def test_round_trip(self, tmp_path, space, streamlines):
        """Points, seeds, properties and labels survive a write and read"""
        stem = tmp_path / "bundle"
        write_bundle(stem, space, streamlines)

        source = StreamlineFileSource(stem)
        assert source.n_streamlines == 2
        assert source.property_names == ['seed', 'target_hits']
        assert source.grid == Grid.from_space(space)

        result = []
        while source.more():
            result.append(source.get())
        source.done()

        for original, copy in zip(streamlines, result):
            np.testing.assert_allclose(copy.points, original.points, atol=1e-5)
            assert copy.point_type is PointType.VOXEL
            assert copy.seed == original.seed
            assert copy.labels == original.labels
            assert copy.properties == original.properties
            np.testing.assert_allclose(copy.point_properties['fa'], original.point_properties['fa'], atol=1e-6)

    def test_corner_origin_storage(self, tmp_path, space):
        """Voxel centres are stored half a voxel from the corner, in mm"""
        stem = tmp_path / "centre"
        write_bundle(stem, space, [Streamline([[0.0, 0.0, 0.0]])], write_labels=False)

        raw = (tmp_path / "centre.trk").read_bytes()
        coords = np.frombuffer(raw[1004:1016], dtype=np.float32)

        np.testing.assert_allclose(coords, [1.0, 1.0, 1.0])

    def test_header_fields(self, tmp_path, space, streamlines):
        write_bundle(tmp_path / "bundle", space, streamlines)

        raw = (tmp_path / "bundle.trk").read_bytes()

        assert raw[:5] == b'TRACK'
        assert np.frombuffer(raw[988:992], dtype=np.int32)[0] == 2
        assert np.frombuffer(raw[996:1000], dtype=np.int32)[0] == 1000

    def test_world_points(self, tmp_path, space, streamlines):
        write_bundle(tmp_path / "bundle", space, streamlines)

        result = read_bundle(tmp_path / "bundle", point_type=PointType.WORLD)

        expected = space.to_world(streamlines[0].points, PointType.VOXEL)
        np.testing.assert_allclose(result[0].points, expected, atol=1e-4)
        assert result[0].point_type is PointType.WORLD

    def test_big_endian(self, tmp_path, space, streamlines):
        """Files written big-endian are detected and read back"""
        write_bundle(tmp_path / "bundle", space, streamlines, endianness='big')

        raw = (tmp_path / "bundle.trk").read_bytes()
        assert raw[996:1000] == b'\x00\x00\x03\xe8'

        result = read_bundle(tmp_path / "bundle")
        np.testing.assert_allclose(result[1].points, streamlines[1].points, atol=1e-5)
        assert result[1].labels == {7}

    def test_seek_skips_records(self, tmp_path, space, streamlines):
        write_bundle(tmp_path / "bundle", space, streamlines)
        source = StreamlineFileSource(tmp_path / "bundle")

        source.seek(1)
        streamline = source.get()
        assert streamline.labels == {7}
        assert not source.more()

        source.seek(0)
        assert source.get().labels == {1, 5}

        with pytest.raises(IndexError):
            source.seek(5)
        source.done()

    def test_skip_past_end(self, tmp_path, space, streamlines):
        write_bundle(tmp_path / "bundle", space, streamlines, write_labels=False)

        with TrackvisSourceAdapter(tmp_path / "bundle.trk") as adapter:
            adapter.open()
            with pytest.raises(DataError):
                adapter.skip(3)

    def test_skip_lands_on_next_record(self, tmp_path, space, streamlines):
        write_bundle(tmp_path / "bundle", space, streamlines, write_labels=False)

        with TrackvisSourceAdapter(tmp_path / "bundle.trk") as adapter:
            adapter.open()
            adapter.skip(1)
            streamline = adapter.read()

        np.testing.assert_allclose(streamline.points, streamlines[1].points, atol=1e-5)
        assert streamline.seed == streamlines[1].seed

    def test_seek_past_end_of_file(self, tmp_path, space, streamlines):
        write_bundle(tmp_path / "bundle", space, streamlines, write_labels=False)

        adapter = open_source_adapter(tmp_path / "bundle")
        with pytest.raises(BinaryStreamError):
            adapter.seek(10 ** 7)
        np.testing.assert_allclose(adapter.read().points, streamlines[0].points, atol=1e-5)
        adapter.close()

    def test_append(self, tmp_path, space, streamlines):
        """Appending adds records and labels and updates the count"""
        stem = tmp_path / "bundle"
        write_bundle(stem, space, streamlines[:1])
        sink = write_bundle(stem, space, streamlines[1:], append=True)

        assert sink.count == 2
        result = read_bundle(stem)
        assert len(result) == 2
        assert [s.labels for s in result] == [{1, 5}, {7}]

    def test_append_to_other_grid(self, tmp_path, space, streamlines):
        write_bundle(tmp_path / "bundle", space, streamlines)

        with pytest.raises(HeaderError):
            StreamlineFileSink(tmp_path / "bundle", ImageSpace((10, 10, 10)), append=True)

    def test_append_without_labels_file(self, tmp_path, space, streamlines):
        write_bundle(tmp_path / "bundle", space, streamlines, write_labels=False)

        with pytest.raises(StreamlineFileError):
            StreamlineFileSink(tmp_path / "bundle", space, append=True)

    def test_property_names_fixed_by_first_record(self, tmp_path, space, streamlines):
        sink = StreamlineFileSink(tmp_path / "bundle", space)
        sink.put(streamlines[0])

        with pytest.raises(DataError):
            sink.put(Streamline([[1.0, 1.0, 1.0]]))
        sink.adapter.close()

    def test_header_name_limits(self, space):
        stream = BinaryOutputStream(io.BytesIO())
        grid = Grid.from_space(space)

        with pytest.raises(HeaderError):
            write_header(stream, grid, ['x' * 21], [], 0)
        with pytest.raises(HeaderError):
            write_header(stream, grid, [], [f"p{i}" for i in range(11)], 0)

    def test_bad_header(self, tmp_path):
        path = tmp_path / "junk.trk"
        path.write_bytes(b'\x00' * 1000)
        adapter = TrackvisSourceAdapter(path)

        with pytest.raises(HeaderError):
            adapter.open()
        assert adapter.state is AdapterState.CLOSED

    def test_handle_lifecycle(self, tmp_path, space, streamlines):
        """Only an open handle can be read; close may be repeated"""
        write_bundle(tmp_path / "bundle", space, streamlines, write_labels=False)
        adapter = TrackvisSourceAdapter(tmp_path / "bundle.trk")

        with pytest.raises(StreamlineFileError):
            adapter.read()

        adapter.open()
        with pytest.raises(StreamlineFileError):
            adapter.open()
        adapter.read()
        adapter.read()
        with pytest.raises(StreamlineFileError):
            adapter.read()

        adapter.close()
        adapter.close()
        assert adapter.state is AdapterState.CLOSED
        with pytest.raises(StreamlineFileError):
            adapter.rewind()

    def test_nibabel_reads_our_files(self, tmp_path, space, streamlines):
        write_bundle(tmp_path / "bundle", space, streamlines, write_labels=False)

        loaded = nib.streamlines.load(str(tmp_path / "bundle.trk"))

        assert len(loaded.streamlines) == 2
        expected = space.to_world(streamlines[0].points, PointType.VOXEL)
        np.testing.assert_allclose(loaded.streamlines[0], expected, atol=1e-4)


class TestMrtrix:
    """Test .tck reading and writing"""

    def test_round_trip(self, tmp_path, space, streamlines):
        """Only geometry is stored; points come back in world coordinates"""
        stem = tmp_path / "bundle"
        write_bundle(stem, space, streamlines, format=StreamlineFormat.MRTRIX, write_labels=False)

        result = read_bundle(stem, point_type=PointType.WORLD)

        assert len(result) == 2
        for original, copy in zip(streamlines, result):
            expected = space.to_world(original.points, PointType.VOXEL)
            np.testing.assert_allclose(copy.points, expected, atol=1e-4)
            assert copy.seed == 0
            assert copy.properties == {}
            assert copy.point_properties == {}

    def test_voxel_points_need_space(self, tmp_path, space, streamlines):
        stem = tmp_path / "bundle"
        write_bundle(stem, space, streamlines, format=StreamlineFormat.MRTRIX, write_labels=False)

        with pytest.raises(StreamlineFileError):
            MrtrixSourceAdapter(f"{stem}.tck", point_type=PointType.VOXEL)

        result = read_bundle(stem, space=space)
        np.testing.assert_allclose(result[0].points, streamlines[0].points, atol=1e-4)

    def test_default_source_reads_world_points(self, tmp_path, space, streamlines):
        """Without a space, .tck files are read in world coordinates"""
        stem = tmp_path / "bundle"
        write_bundle(stem, space, streamlines, format=StreamlineFormat.MRTRIX, write_labels=False)

        result = read_bundle(stem)

        assert result[0].point_type is PointType.WORLD
        np.testing.assert_allclose(
            result[0].points, streamlines[0].points_in(PointType.WORLD, space), atol=1e-4
        )

    def test_header_layout(self, tmp_path, space, streamlines):
        """The data offset in the header is the header's own length"""
        write_bundle(tmp_path / "bundle", space, streamlines, format=StreamlineFormat.MRTRIX,
                     write_labels=False)

        raw = (tmp_path / "bundle.tck").read_bytes()
        header_end = raw.index(b'END\n') + 4
        header = raw[:header_end].decode('latin1')
        fields = dict(line.split(': ', 1) for line in header.splitlines()[1:-1])

        assert header.startswith("mrtrix tracks\n")
        assert fields['count'] == "0000000002"
        assert fields['file'] == f". {header_end}"

        data = np.frombuffer(raw[header_end:], dtype=np.float32).reshape(-1, 3)
        assert len(data) == 3 + 1 + 2 + 1 + 1
        assert np.all(np.isnan(data[3]))
        assert np.all(np.isinf(data[-1]))

    def test_big_endian(self, tmp_path, space, streamlines):
        write_bundle(tmp_path / "bundle", space, streamlines, format=StreamlineFormat.MRTRIX,
                     write_labels=False, endianness='big')

        raw = (tmp_path / "bundle.tck").read_bytes()
        assert b"datatype: Float32BE" in raw

        result = read_bundle(tmp_path / "bundle", space=space)
        np.testing.assert_allclose(result[1].points, streamlines[1].points, atol=1e-4)

    def test_append(self, tmp_path, space, streamlines):
        stem = tmp_path / "bundle"
        write_bundle(stem, space, streamlines[:1], format=StreamlineFormat.MRTRIX, write_labels=False)
        write_bundle(stem, space, streamlines, format=StreamlineFormat.MRTRIX, write_labels=False,
                     append=True)

        result = read_bundle(stem, space=space)

        assert len(result) == 3
        np.testing.assert_allclose(result[2].points, streamlines[1].points, atol=1e-4)

    def test_seek(self, tmp_path, space, streamlines):
        stem = tmp_path / "bundle"
        write_bundle(stem, space, streamlines, format=StreamlineFormat.MRTRIX, write_labels=False)
        source = StreamlineFileSource(stem, space=space)

        source.seek(1)
        np.testing.assert_allclose(source.get().points, streamlines[1].points, atol=1e-4)
        source.done()

    def test_early_end_marker(self, tmp_path, space, streamlines):
        """A count larger than the data is a data error"""
        stem = tmp_path / "bundle"
        write_bundle(stem, space, streamlines, format=StreamlineFormat.MRTRIX, write_labels=False)
        path = tmp_path / "bundle.tck"
        path.write_bytes(path.read_bytes().replace(b"count: 0000000002", b"count: 0000000003"))

        adapter = MrtrixSourceAdapter(path)
        adapter.open()
        adapter.skip(2)
        with pytest.raises(DataError):
            adapter.read()
        adapter.close()

    def test_bad_header(self, tmp_path):
        path = tmp_path / "junk.tck"
        path.write_bytes(b"mrtrix tracks\ncount: 1\nEND\n")

        with pytest.raises(HeaderError):
            MrtrixSourceAdapter(path).open()

    def test_nibabel_reads_our_files(self, tmp_path, space, streamlines):
        write_bundle(tmp_path / "bundle", space, streamlines, format=StreamlineFormat.MRTRIX,
                     write_labels=False)

        loaded = nib.streamlines.load(str(tmp_path / "bundle.tck"))

        assert len(loaded.streamlines) == 2
        expected = space.to_world(streamlines[1].points, PointType.VOXEL)
        np.testing.assert_allclose(loaded.streamlines[1], expected, atol=1e-4)


class TestLabelList:
    """Test the .trkl sidecar"""

    @pytest.mark.parametrize("endianness", ['little', 'big'])
    def test_round_trip(self, tmp_path, endianness):
        labels = StreamlineLabelList([{3, 1}, set(), {2}], {1: "thalamus", 2: "cortex"})
        labels.write(tmp_path / "labels.trkl", endianness)

        copy = StreamlineLabelList.read(tmp_path / "labels.trkl")

        assert copy.labels == [{1, 3}, set(), {2}]
        assert copy.dictionary == {1: "thalamus", 2: "cortex"}
        assert copy.names(0) == ["thalamus", "3"]

    def test_not_a_label_list(self, tmp_path):
        path = tmp_path / "labels.trkl"
        path.write_bytes(b"NOPE\x01\x00\x00\x00")

        with pytest.raises(DataError):
            StreamlineLabelList.read(path)

    def test_check_count(self):
        with pytest.raises(DataError):
            StreamlineLabelList([{1}]).check_count(2)


class TestFileFacade:
    """Test format probing and label handling"""

    def test_file_stem(self):
        assert file_stem("data/bundle.trk") == "data/bundle"
        assert file_stem("data/bundle.tck") == "data/bundle"
        assert file_stem("data/bundle") == "data/bundle"
        assert str(label_path("data/bundle.trk")) == "data/bundle.trkl"

    def test_search_order(self, tmp_path, space, streamlines):
        """TrackVis is preferred when both formats exist"""
        stem = tmp_path / "bundle"
        write_bundle(stem, space, streamlines, format=StreamlineFormat.MRTRIX, write_labels=False)
        assert resolve_source_path(stem) == (tmp_path / "bundle.tck", StreamlineFormat.MRTRIX)

        write_bundle(stem, space, streamlines, write_labels=False)
        assert resolve_source_path(stem) == (tmp_path / "bundle.trk", StreamlineFormat.TRACKVIS)

    def test_missing_source(self, tmp_path):
        with pytest.raises(StreamlineFileError, match="No streamline source file"):
            StreamlineFileSource(tmp_path / "missing")

    def test_label_count_mismatch(self, tmp_path, space, streamlines):
        stem = tmp_path / "bundle"
        write_bundle(stem, space, streamlines)
        StreamlineLabelList([{1}]).write(label_path(stem))

        with pytest.raises(DataError):
            StreamlineFileSource(stem)

    def test_labels_skipped_on_request(self, tmp_path, space, streamlines):
        write_bundle(tmp_path / "bundle", space, streamlines)

        result = read_bundle(tmp_path / "bundle", read_labels=False)

        assert all(not s.labels for s in result)

    def test_borrowed_label_list(self, tmp_path, space, streamlines):
        """A label list passed in is used but not released"""
        write_bundle(tmp_path / "bundle", space, streamlines, write_labels=False)
        labels = StreamlineLabelList([{11}, {12}])

        source = StreamlineFileSource(tmp_path / "bundle", label_list=labels)
        first = source.get()
        source.done()

        assert first.labels == {11}
        assert source.labels is labels
        assert not source.owns_labels

    def test_owned_label_list_released(self, tmp_path, space, streamlines):
        write_bundle(tmp_path / "bundle", space, streamlines)

        source = StreamlineFileSource(tmp_path / "bundle")
        assert source.owns_labels
        source.done()

        assert source.labels is None

    def test_label_dictionary_written(self, tmp_path, space, streamlines):
        write_bundle(tmp_path / "bundle", space, streamlines, label_dictionary={5: "putamen"})

        labels = StreamlineLabelList.read(tmp_path / "bundle.trkl")

        assert labels.dictionary == {5: "putamen"}
        assert labels.names(0) == ["1", "putamen"]

    def test_failed_run_closes_files(self, tmp_path, space, streamlines):
        """Both files are released when a run fails, and no labels are written"""
        write_bundle(tmp_path / "bundle", space, streamlines)

        class Exploding(DataManipulator):
            def process(self, data):
                if data.labels == {7}:
                    raise RuntimeError("bad streamline")
                return True

        source = StreamlineFileSource(tmp_path / "bundle")
        sink = StreamlineFileSink(tmp_path / "copy", space)
        pipeline = Pipeline(source, block_size=1)
        pipeline.add_manipulator(Exploding())
        pipeline.add_sink(sink)

        with pytest.raises(RuntimeError, match="bad streamline"):
            pipeline.run()

        assert sink.adapter.state is AdapterState.CLOSED
        assert source.adapter.state is AdapterState.CLOSED
        assert not (tmp_path / "copy.trkl").exists()
        assert len(read_bundle(tmp_path / "copy", read_labels=False)) == 1

    def test_sink_as_context_manager(self, tmp_path, space, streamlines):
        with StreamlineFileSink(tmp_path / "bundle", space) as sink:
            for streamline in streamlines:
                sink.put(streamline)
        assert len(read_bundle(tmp_path / "bundle")) == 2
        assert label_path(tmp_path / "bundle").is_file()

        with pytest.raises(ValueError):
            with StreamlineFileSink(tmp_path / "broken", space) as sink:
                sink.put(streamlines[0])
                raise ValueError("stop")
        assert sink.adapter.state is AdapterState.CLOSED
        assert not label_path(tmp_path / "broken").exists()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
