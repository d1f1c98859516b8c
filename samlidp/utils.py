import calendar
import re
import time

from lxml import objectify

from samlidp.settings import MULTIPLE_OCCURRENCES_TAGS

TIME_FORMAT = '%Y-%m-%dT%H:%M:%SZ'
TIME_FORMAT_WITH_FRAGMENT = re.compile(
    r'^(\d{4,4}-\d{2,2}-\d{2,2}T\d{2,2}:\d{2,2}:\d{2,2})(\.\d*)?Z?$')


def str_to_struct_time(timestr, format=TIME_FORMAT):
    """
    :param timestr:
    :param format:
    :return: UTC time
    """
    if not timestr:
        return 0
    try:
        then = time.strptime(timestr, format)
    except ValueError:  # assume it's a format problem
        elem = TIME_FORMAT_WITH_FRAGMENT.match(timestr)
        then = time.strptime(elem.groups()[0] + 'Z', TIME_FORMAT)

    return time.gmtime(calendar.timegm(then))


def objectify_from_string(xmlstr):
    """
    Parse untrusted XML without resolving entities or touching the network.
    """
    parser = objectify.makeparser(
        remove_blank_text=True, resolve_entities=False, no_network=True
    )
    return objectify.fromstring(xmlstr, parser=parser)


def saml_to_dict(xmlstr):
    root = objectify_from_string(xmlstr)

    def _obj(elem):
        children = {}
        for child in elem.iterchildren():
            subdict = _obj(child)

            if child.tag in MULTIPLE_OCCURRENCES_TAGS:
                existing = children.get(child.tag, None)
                if isinstance(existing, list):
                    existing.append(subdict)
                else:
                    children[child.tag] = [subdict]
            else:
                children[child.tag] = subdict

        return {
            'attrs': dict(elem.attrib),
            'children': children,
            'text': elem.text,
        }

    return {
        root.tag: _obj(root)
    }
