"""
Miscellaneous strategies for Hypothesis testing.
"""
from hypothesis import strategies as s


def dns_labels():
    """
    Strategy for generating limited charset DNS labels.
    """
    # This is too limited, but whatever
    return s.from_regex(u'\\A[a-z]{3}[a-z0-9-]{0,21}[a-z]\\Z')


def dns_names():
    """
    Strategy for generating limited charset, fully qualified DNS names.
    """
    return (
        s.lists(dns_labels(), min_size=2, max_size=6)
        .map(u'.'.join))


def tokens():
    """
    Strategy for generating Base64url tokens, as nonces and challenge tokens
    look.
    """
    return s.from_regex(u'\\A[A-Za-z0-9_-]{1,64}\\Z')


def contacts():
    """
    Strategy for generating lists of ``mailto:`` contact URIs.
    """
    return s.lists(
        dns_names().map(lambda name: u'mailto:admin@' + name),
        min_size=1, max_size=3)


__all__ = ['dns_labels', 'dns_names', 'tokens', 'contacts']
