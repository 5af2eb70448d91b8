from ._http import HTTP01Responder, listen_http01


__all__ = ['HTTP01Responder', 'listen_http01']
