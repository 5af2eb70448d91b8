from twisted.internet import defer
from twisted.python.filepath import FilePath
from twisted.trial.unittest import TestCase
from zope.interface.verify import verifyObject

from txboulder.interfaces import IJSONStore
from txboulder.store import JSONStore
from txboulder.testing import MemoryStore


EXAMPLE_DOCUMENT = {
    u'location': u'https://boulder.example/acme/cert/1',
    u'certificate': u'MIIBAA',
    u'names': [u'example.com', u'www.example.com'],
    }


class _StoreTestsMixin(object):
    """
    Tests for `txboulder.interfaces.IJSONStore` implementations.
    """
    def test_interface(self):
        verifyObject(IJSONStore, self.getStore())

    @defer.inlineCallbacks
    def test_write_read(self):
        """
        A written document is read back, and ``write`` fires with it.
        """
        store = self.getStore()
        result = yield store.write(u'example.com', EXAMPLE_DOCUMENT)
        self.assertEqual(EXAMPLE_DOCUMENT, result)
        result = yield store.read(u'example.com')
        self.assertEqual(EXAMPLE_DOCUMENT, result)

    @defer.inlineCallbacks
    def test_write_twice(self):
        """
        Writing a document a second time replaces the first one.
        """
        store = self.getStore()
        yield store.write(u'example.com', EXAMPLE_DOCUMENT)
        yield store.write(u'example.com', {u'other': True})
        result = yield store.read(u'example.com')
        self.assertEqual({u'other': True}, result)

    @defer.inlineCallbacks
    def test_missing(self):
        """
        Reading a document that was never written gives ``None``.
        """
        store = self.getStore()
        result = yield store.read(u'example.com')
        self.assertIsNone(result)


class JSONStoreTests(_StoreTestsMixin, TestCase):
    """
    Tests for `txboulder.store.JSONStore`.
    """
    def getStore(self):
        self.temp_dir = FilePath(self.mktemp())
        self.temp_dir.makedirs()
        return JSONStore(self.temp_dir)

    def test_file_layout(self):
        """
        Each document is an indented JSON file named after it.
        """
        store = self.getStore()
        self.successResultOf(store.write(u'account', {u'kty': u'RSA'}))
        content = self.temp_dir.child(u'account.json').getContent()
        self.assertEqual(b'{\n  "kty": "RSA"\n}', content)

    def test_missing_directory(self):
        """
        The directory is created on first write.
        """
        path = FilePath(self.mktemp()).child(u'state')
        store = JSONStore(path)
        self.assertIsNone(self.successResultOf(store.read(u'account')))
        self.successResultOf(store.write(u'account', {}))
        self.assertTrue(path.child(u'account.json').isfile())

    def test_malformed(self):
        """
        A file that does not hold JSON reads as ``None``.
        """
        store = self.getStore()
        self.temp_dir.child(u'account.json').setContent(b'{"kty":')
        self.assertIsNone(self.successResultOf(store.read(u'account')))

    def test_no_name(self):
        store = self.getStore()
        self.assertIsNone(self.successResultOf(store.read(u'')))

    def test_bytes_path(self):
        """
        Paths are converted to text mode.
        """
        path = FilePath(self.mktemp().encode('utf-8'))
        store = JSONStore(path)
        self.assertIsInstance(store.path.path, str)


class MemoryStoreTests(_StoreTestsMixin, TestCase):
    """
    Tests for `txboulder.testing.MemoryStore`.
    """
    def getStore(self):
        return MemoryStore()

    def test_initial(self):
        store = MemoryStore({u'account': {u'kty': u'RSA'}})
        self.assertEqual(
            {u'kty': u'RSA'}, self.successResultOf(store.read(u'account')))


__all__ = ['JSONStoreTests', 'MemoryStoreTests']
