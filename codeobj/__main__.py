from codeobj.cli import main

raise SystemExit(main())
