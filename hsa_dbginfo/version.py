# (c) Copyright 2022 Aaron Kimball

DBGINFO_VERSION = [0, 1, 0]
DBGINFO_VERSION_STR = '.'.join(map(str, DBGINFO_VERSION))
FULL_DBGINFO_VERSION_STR = f'HSA kernel debug info resolver (hsa-dbginfo) version {DBGINFO_VERSION_STR}'

if __name__ == '__main__':
    print(FULL_DBGINFO_VERSION_STR)
