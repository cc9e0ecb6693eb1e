import pytest
from botocore.exceptions import ClientError

from certiwipe_gateway.blobstore import ChunkReader, S3BlobStore, artifact_key
from certiwipe_gateway.config import Settings
from certiwipe_gateway.errors import BlobStoreError, ValidationError


class FakeS3:
    def __init__(self, error=None):
        self.objects = {}
        self.error = error

    def upload_fileobj(self, fileobj, bucket, key, ExtraArgs=None):
        if self.error:
            raise self.error
        self.objects[(bucket, key)] = (fileobj.read(), ExtraArgs)


def test_artifact_key_is_deterministic():
    assert artifact_key("C1") == "C1.pdf"
    assert artifact_key("C1") == artifact_key(" C1 ")
    with pytest.raises(ValidationError):
        artifact_key("")


def test_chunk_reader_joins_chunks():
    reader = ChunkReader([b"ab", b"", b"cde", b"f"])
    assert reader.read() == b"abcdef"


def test_upload_overwrites_same_key(settings):
    s3 = FakeS3()
    store = S3BlobStore(settings, client=s3)
    url1 = store.upload_stream(iter([b"v1"]), "C1.pdf", "application/pdf")
    url2 = store.upload_stream(iter([b"v2-", b"longer"]), "C1.pdf", "application/pdf")
    assert url1 == url2 == "https://certs.s3.amazonaws.com/certificates/C1.pdf"
    assert list(s3.objects) == [("certs", "certificates/C1.pdf")]
    data, extra = s3.objects[("certs", "certificates/C1.pdf")]
    assert data == b"v2-longer"
    assert extra == {"ContentType": "application/pdf"}


def test_public_url_variants():
    regional = S3BlobStore(Settings(blob_bucket="b", blob_region="eu-west-1", blob_prefix=""), client=FakeS3())
    assert regional.upload_stream([b"x"], "C1.pdf") == "https://b.s3.eu-west-1.amazonaws.com/C1.pdf"
    cdn = S3BlobStore(Settings(blob_bucket="b", blob_public_base_url="https://cdn.example/"), client=FakeS3())
    assert cdn.upload_stream([b"x"], "C1.pdf") == "https://cdn.example/certificates/C1.pdf"


def test_upload_errors_are_typed(settings):
    err = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
    store = S3BlobStore(settings, client=FakeS3(error=err))
    with pytest.raises(BlobStoreError):
        store.upload_stream([b"x"], "C1.pdf")


def test_missing_bucket(settings):
    store = S3BlobStore(settings.model_copy(update={"blob_bucket": None}), client=FakeS3())
    with pytest.raises(BlobStoreError):
        store.upload_stream([b"x"], "C1.pdf")
